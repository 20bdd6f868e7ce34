import re

import setuptools

with open("pybackupgw/__init__.py", "r") as fh:
    version_tuple = re.search(r"^version_tuple = \((\d+), (\d+), (\d+)\)", fh.read(), re.M).groups()

with open("README.md", "r") as fh:
    long_description = fh.read()

setuptools.setup(
    name="pybackupgw",
    version=".".join(version_tuple),
    author="pyBackupGW contributors",
    description="Python module to monitor a Tesla Backup Gateway and raise power flow events",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=setuptools.find_packages(include=["pybackupgw", "pybackupgw.*"]),
    python_requires=">=3.8",
    install_requires=[
        'requests',
        'urllib3',
        'cryptography',
        'pydantic>=2',
        'pydantic-settings>=2',
        'python-dotenv',
        'python-dateutil',
    ],
    extras_require={
        'test': [
            'pytest',
            'pytest-asyncio',
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
)
