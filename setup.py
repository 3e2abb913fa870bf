#!/usr/bin/python3
# Setup file for blobgit
# Copyright (C) 2026 The blobgit authors
# SPDX-License-Identifier: Apache-2.0 OR GPL-2.0-or-later

from setuptools import find_packages, setup

gcs_require = ["google-cloud-storage"]

tests_require = ["pytest"] + gcs_require


setup(
    name="blobgit",
    version="0.1.0",
    description="Git smart HTTP server that stores refs and packs in a blob store",
    license="Apache-2.0 OR GPL-2.0-or-later",
    packages=find_packages(include=["blobgit", "blobgit.*"]),
    python_requires=">=3.10",
    install_requires=["aiohttp>=3.9"],
    extras_require={
        "gcs": gcs_require,
        "test": tests_require,
    },
    entry_points={
        "console_scripts": [
            "blobgit-server=blobgit.aiohttp.server:main",
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: POSIX",
        "Topic :: Software Development :: Version Control :: Git",
    ],
)
