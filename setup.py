#!/usr/bin/env python3
"""
Setup configuration for playlist-sync
Cross-device sync of playlists, favorites and play history through a GitHub repository
"""

from setuptools import setup, find_packages

# Read README for long description
with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

# Core requirements (always installed)
core_requirements = [
    "click>=8.1.7",
    "rich-click>=1.7.0",
    "pyyaml>=6.0.1",
    "requests>=2.31.0",
    "tqdm>=4.66.1",
    "python-dotenv>=1.0.0",
]

test_requirements = [
    "pytest>=7.4.3",
]

setup(
    name="playlist-sync",
    version="0.1.0",
    author="playlist-sync contributors",
    description="Keep a music library's playlists, favorites and play history in sync across devices",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["playlist_sync", "playlist_sync.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: End Users/Desktop",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Multimedia :: Sound/Audio",
        "Topic :: System :: Archiving :: Mirroring",
    ],
    python_requires=">=3.10",
    install_requires=core_requirements,
    extras_require={
        "test": test_requirements,
        "dev": test_requirements + [
            "black>=23.11.0",
            "flake8>=6.1.0",
            "mypy>=1.7.0",
            "types-PyYAML>=6.0.12",
            "types-requests>=2.31.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "psync=playlist_sync.cli:main",
        ],
    },
    keywords="playlist sync backup github music cli",
)
