"""
tcpdrop
Streaming multi-file transfer over a plain TCP byte stream
"""
from setuptools import setup, find_packages

setup(
    name="tcpdrop",
    version="1.0.0",
    description="Streaming multi-file transfer over plain TCP (sender / receiver CLI)",
    packages=find_packages(exclude=["tests*"]),
    python_requires=">=3.10",
    install_requires=[],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "tcpdrop=tcpdrop.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: System Administrators",
        "Topic :: System :: Networking",
        "Programming Language :: Python :: 3.10",
    ],
)
