# Copyright © 2025 SingleSign

import re
import os
import codecs
from os import path
from io import open
from setuptools import setup, find_packages


here = path.abspath(path.dirname(__file__))

with open(path.join(here, "README.md"), encoding="utf-8") as f:
    long_description = f.read()

with codecs.open(os.path.join(here, "singlesign_canonical/__init__.py"), encoding="utf-8") as init_file:
    version_match = re.search(r"^__version__ = ['\"]([^'\"]*)['\"]", init_file.read(), re.M)
    if not version_match:
        raise RuntimeError("Unable to find version string in singlesign_canonical/__init__.py")
    version_string = version_match.group(1)


requirements = [
    # Ethereum signing, typed data and RPC
    "eth-account>=0.13.0",
    "eth-keys>=0.5.0",
    "eth-utils>=4.0.0",
    "web3>=7.0.0",

    # Enclave sealing keys and receipt encoding
    "cryptography>=42.0.0",
    "cbor2>=5.4.6,<6",

    # Configuration
    "python-dotenv>=1.0.0",

    # Utilities
    "click>=8.1.0",
]

setup(
    name="singlesign",
    version=version_string,
    description="TEE-backed attestations that one account signed a batch of EIP-712 documents",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="SingleSign",
    license="MIT",
    packages=find_packages(include=['singlesign_canonical', 'singlesign_canonical.*', 'singlesign_tee', 'singlesign_tee.*', 'singlesign_cli', 'singlesign_cli.*']),
    include_package_data=True,
    python_requires=">=3.10",
    install_requires=requirements,
    extras_require={
        "test": [
            "pytest>=8.0.0",
            "pytest-mock>=3.10.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "singlesign=singlesign_cli.cli:main",
        ]
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3 :: Only",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Security :: Cryptography",
    ],
)
