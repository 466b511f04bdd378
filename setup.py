from setuptools import setup, find_packages
import re
from pathlib import Path


def read_readme():
    this_directory = Path(__file__).parent
    readme_file = this_directory / 'README.md'
    if readme_file.exists():
        return readme_file.read_text(encoding='utf-8')
    return ""

def get_version():
    init_file = Path(__file__).parent / 'storefront' / '__init__.py'
    if init_file.exists():
        content = init_file.read_text(encoding='utf-8')
        match = re.search(r'__version__\s*=\s*["\']([^"\']+)["\']', content)
        if match:
            return match.group(1)
    return "0.3.0"


setup(
    name="storefront-db",
    version=get_version(),
    author="Storefront Team",
    description="Pooled MySQL access, retrying transactions and idempotent schema bootstrap for the storefront.",
    long_description=read_readme(),
    long_description_content_type='text/markdown',
    packages=find_packages(include=["storefront", "storefront.*"]),
    include_package_data=True,
    python_requires=">=3.11",
    install_requires=[
        "aiomysql>=0.2.0",
        "PyMySQL>=1.1",
        "pydantic>=2.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "Topic :: Database",
    ],
    keywords="mysql aiomysql asyncio connection pool transactions schema",
)
