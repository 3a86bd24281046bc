from setuptools import setup, find_packages

setup(
    name="agent-stake",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    include_package_data=True,
    install_requires=[
        "PyYAML>=6.0.1",
        "loguru>=0.7.0",
        "pydantic>=2.0.0",
        "Click>=8.0"
    ],
    extras_require={
        "webhook": [
            "requests>=2.31.0",
        ],
        "test": [
            "pytest>=7.0",
            "requests>=2.31.0",
        ]
    },
    entry_points={
        "console_scripts": [
            "agent-stake=agent_stake.main:cli",
        ],
    },
    python_requires=">=3.9",
    author="Agent Stake Team",
    description="Stake lifecycle and rewards/slashing accounting for agent connection claims",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
    ],
)
