from setuptools import find_packages, setup

setup(
    name="ci-status",
    version="0.1.0",
    packages=find_packages(
        include=[
            "ci_common",
            "ci_common.*",
            "ci_provider",
            "ci_provider.*",
            "ci_persistence",
            "ci_persistence.*",
            "ci_dashboard",
            "ci_dashboard.*",
        ]
    ),
    install_requires=[
        "requests>=2.31.0",
        "aiosqlite>=0.19.0",
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
            "ci-status=ci_dashboard.cli:main",
        ],
    },
    python_requires=">=3.11",
)
