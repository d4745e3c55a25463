from setuptools import setup, find_packages

setup(
    name="scbfa",
    version="0.1.0",
    packages=find_packages(include=["scbfa", "scbfa.*"]),
    install_requires=[
        "numpy>=1.20.0",
        "scipy>=1.7.0",
        "pandas>=1.3.0",
    ],
    extras_require={
        'test': ['pytest>=7.0'],
    },
    python_requires='>=3.8',
    description="Binary factor analysis of single-cell gene detection patterns",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
)
