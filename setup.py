from setuptools import setup, find_packages

setup(
    name="dataverse-mcp",
    version="1.0.0",
    description="A Model Context Protocol (MCP) server for the Microsoft Dataverse Web API",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "pydantic>=2",
        "msal",
        "requests",
        "mcp>=1.2,<2",
        "python-dotenv",
        "pyyaml",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "dataverse-mcp=dataverse_mcp.main_entry:main_entry",
        ],
    },
    python_requires=">=3.10",
)
