from setuptools import find_packages, setup

setup(
    name="deploy-tracker",
    version="0.1.0",
    packages=find_packages(
        include=[
            "deploy_common",
            "deploy_common.*",
            "deploy_client",
            "deploy_client.*",
            "deploy_tracker",
            "deploy_tracker.*",
        ]
    ),
    install_requires=[
        "requests>=2.31.0",
        "click>=8.1.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "pytest-xdist>=3.3.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "deployctl=deploy_client.cli:main",
        ],
    },
    python_requires=">=3.11",
)
