from setuptools import find_packages, setup

setup(
    name="ftp-cachestore",
    version="0.1.0",
    description="File manager storage for FTP/SFTP servers with a write-synchronized listing cache",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "paramiko>=3.0.0",
        "Pillow>=10.0.0",
    ],
    entry_points={
        "console_scripts": [
            "ftp-cachestore=ftp_cachestore.__main__:main",
        ],
    },
    python_requires=">=3.10",
    extras_require={
        "dev": [
            "pytest",
            "pyftpdlib",
            "build",
            "twine",
        ],
    },
)
