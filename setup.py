# setup.py

import os
from setuptools import setup, find_packages

# Load version from version.py
version = {}
with open(os.path.join("chipmap", "version.py")) as f:
    exec(f.read(), version)

# ===========================
# External tools
# ===========================
# chipmap drives external programs that are not installed by pip:
# fastqc, Trimmomatic (java), bowtie2, samtools and sambamba.
# Their commands, the Bowtie2 genome indices and the Trimmomatic adapter file
# are configured in chipmap/config.json (or a copy passed via --config-path).

setup(
    name="chipmap",
    version=version["__version__"],
    packages=find_packages(include=["chipmap", "chipmap.*"]),
    include_package_data=True,
    install_requires=[
        "pandas>=2.2.0",
        "regex>=2024.7.24",
        "biopython>=1.84",
        "setuptools>=72.2.0",
        "pysam>=0.22.1",
    ],
    entry_points={
        "console_scripts": [
            "chipmap=chipmap.cli:main",
        ],
    },
    description="chipmap: single-end ChIP-Seq FASTQ to uniquely mapped BAM",
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: POSIX :: Linux",
    ],
    python_requires=">=3.9",
    extras_require={
        "dev": [
            "pytest",
            "black",
            "flake8",
        ],
    },
    package_data={
        "chipmap": [
            "config.json",  # Default tool commands, genome indices and adapters
        ],
    },
)
