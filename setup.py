from setuptools import setup, find_packages

from reconciler._version import __version__

setup(
    name="dao-reconciler",
    version=__version__,
    description="Client-side reconciliation of DAO governance state from an EVM ledger.",
    author="DAO Reconciler",
    license="MIT license",
    python_requires=">=3.9",
    packages=find_packages(exclude=["tests", "tests.*"]),
    package_data={"reconciler": ["abis/*.json"]},
    install_requires=[
        "web3>=7",
        "eth-abi",
        "abifsm",
        "sanic",
        "sanic-ext",
        "python-dotenv",
        "PyYAML",
        "argh",
        "aiohttp",
        "sortedcontainers",
    ],
    extras_require={
        "test": ["pytest", "pytest-asyncio", "hexbytes", "eth-utils"],
    },
    entry_points={
        "console_scripts": ["dao-reconciler=reconciler.cli:main"],
    },
)
