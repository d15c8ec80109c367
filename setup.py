from setuptools import setup, find_packages

setup(
    name="eks-cluster-provisioner",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    include_package_data=True,
    package_data={
        "eks_provisioner.templates": [
            "cloudformation/*.yaml",
            "manifests/*.yaml",
        ],
    },
    python_requires=">=3.9",
    install_requires=[
        "boto3",
        "botocore",
        "pydantic>=2",
        "PyYAML",
        "rich",
        "temporalio>=1.10",
        "typer",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
        ],
    },
    entry_points={
        "console_scripts": [
            "eks-provision=eks_provisioner.cli:main",
        ],
    },
)
