from setuptools import setup, find_packages

setup(
    name="fedledger",
    version="0.1.0",
    description="Round submission orchestration for ledger-backed federated learning",
    author="ProtoGalaxy Team",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    python_requires=">=3.11",
    install_requires=[
        "numpy>=1.24.0",
        "pandas>=2.0.0",
        "pyyaml>=6.0",
        "tabulate>=0.9.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
        ],
    },
)
