#!/usr/bin/env python3

from setuptools import setup

setup(
    name="flashkit-md",
    version="0.5",
    description="Programmer for MX29GL128E flash cartridges with a bank switching CPLD mapper.",
    author="The FlashKit Team",
    license="MIT",
    packages=[
        "flashkit",
        "flashkit/objects",
        "flashkit/utils",
    ],
    python_requires='>=3.7',
    install_requires=["pyserial>=3.4", "cmd2>=2.0,<3"],
    extras_require={"test": ["pytest"]},
    tests_require=["pytest"],
    entry_points={
        "console_scripts": ["flashkit=flashkit.cli:flashkit_entry_point"]
    },
    zip_safe=False,
)
