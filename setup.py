from setuptools import setup, find_packages

setup(
    name="pcap-broker",
    version="0.1.0",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    install_requires=[
        "click>=8.0.0",
        "scapy>=2.5.0",
        "loguru>=0.7.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "pcap-broker=pcap_broker.cli.main:cli",
        ],
    },
    python_requires=">=3.8",
)
