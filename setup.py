from setuptools import setup, find_packages

setup(
    name="crm-agent",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*", "examples"]),
    install_requires=[
        "click>=8.0.0",
        "numpy>=1.21.0",
        "rich>=12.0.0",
        "openai>=1.0.0",
        "playwright>=1.40.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "crm-agent=crm_agent.cli:cli",
        ],
    },
    author="carlhannes",
    description="Adaptive browser automation engine for dealership CRM tasks",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    python_requires=">=3.8",
)
