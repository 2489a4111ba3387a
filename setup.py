from setuptools import setup, find_packages


setup(
    name="sessionvault",
    version="0.1",
    packages=find_packages(include=["sessionvault", "sessionvault.*"]),
    description="Offline full-text search over an encrypted, compressed bundle of WWDC session transcripts.",
    author="vercingetorx",
    python_requires=">=3.9",
    install_requires=[
        "pycryptodomex>=3.23.0",
    ],
    extras_require={
        "zstd": ["zstandard>=0.22.0"],
    },
    entry_points={
        "console_scripts": [
            "sessionvault=sessionvault.cli:main",
        ]
    },
)
