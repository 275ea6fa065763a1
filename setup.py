from setuptools import setup, find_packages

setup(
    name="eks-blueprint-orchestrator",
    version="0.1.0",
    packages=find_packages(include=["eks_orchestrator", "eks_orchestrator.*"]),
    include_package_data=True,
    python_requires=">=3.10",
    install_requires=[
        "boto3",
        "botocore",
        "cli-core-yo>=1,<2",
        "pydantic>=2",
        "PyYAML",
        "rich",
        "typer",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "eks-orchestrator=eks_orchestrator.cli:main",
        ],
    },
)
