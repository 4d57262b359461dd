from setuptools import setup, find_packages

setup(
    name="stcflash",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "argcomplete",
        "pyserial",
        "tqdm",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "stcflash=stcflash.main:main",
        ],
    },
    author="Henrik Olsson",
    author_email="henols@gmail.com",
    description="Build and upload firmware for STC89C52 microcontrollers with sdcc and stcgal",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: POSIX :: Linux",
    ],
    python_requires=">=3.9",
)
