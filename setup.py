from setuptools import find_packages, setup

PACKAGE_NAME = "weightsmart_monitor"

base_requires = [
    "PyYAML>=6.0",
    "requests>=2.32",
]
test_requires = [
    "pytest>=7.4",
]

setup(
    name="weightsmart-monitor",
    version="0.1.0",
    description="Tamper monitoring client for networked weight and light sensor devices",
    packages=find_packages(include=(PACKAGE_NAME, f"{PACKAGE_NAME}.*")),
    include_package_data=False,
    python_requires=">=3.10",
    install_requires=base_requires,
    extras_require={"test": test_requires},
    entry_points={
        "console_scripts": [
            "weightsmart=weightsmart_monitor.cli.app:main",
        ]
    },
)
