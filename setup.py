import os
from setuptools import setup, find_packages

# Read the version from the package
with open(os.path.join("src", "onerng_tools", "__init__.py"), "r") as f:
    for line in f:
        if line.startswith("__version__"):
            exec(line)
            break

# Read long description from README
with open("README.md", "r", encoding="utf-8") as f:
    long_description = f.read()

setup(
    name="onerng_tools",
    version=__version__,
    description="Driver and firmware verifier for the OneRNG hardware entropy generator",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    install_requires=[
        "typeguard>=4.0.0",
        "tqdm>=4.65.0",
        "pyserial>=3.5",
        "pycryptodome>=3.18.0",
        "python-gnupg>=0.5.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    python_requires=">=3.9",
    classifiers=[
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Operating System :: POSIX :: Linux",
        "Operating System :: MacOS",
        "Intended Audience :: System Administrators",
        "Topic :: Security :: Cryptography",
        "Topic :: System :: Hardware",
        "Topic :: Utilities",
    ],
    entry_points={
        "console_scripts": [
            "onerng=onerng_tools.cli:main",
        ],
    },
)
