from setuptools import setup, find_packages

setup(
    name="statewright",
    version="0.1.0",
    description="Guarded, persistent finite state machines for workflow objects",
    author="statewright Team",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "pyyaml>=6.0",
        "sqlalchemy>=2.0",
        "redis>=4.5",
        "click>=8.0",
        "rich>=13.0",
        "filelock>=3.12",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
        ],
    },
    entry_points={
        "console_scripts": [
            "statewright=statewright.cli:main",
        ],
    },
)
