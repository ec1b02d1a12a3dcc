import setuptools

with open("README.md", "r") as fh:
    long_description = fh.read()


setuptools.setup(
    name="lazy-hdf5",
    version="0.1.0",
    description="Lazy, chunked and growable N-dimensional datasets",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=["lazy_hdf5"],
    license="BSD",
    install_requires=[
        "h5py>=3",
        "numpy",
        "ndindex>=1.8",
    ],
    extras_require={
        "test": [
            "pytest",
            "hypothesis",
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: BSD License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.10",
)
