from setuptools import setup, find_packages

setup(
    name="metacc",
    version="0.1.0",
    description="Portable C/C++ compiler driver",
    packages=find_packages(exclude=["test", "test.*"]),
    python_requires=">=3.10",
    install_requires=[],
    extras_require={"test": ["pytest"]},
    entry_points={"console_scripts": ["metacc=metacc._cli:main"]},
)
