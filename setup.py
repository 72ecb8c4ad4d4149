from setuptools import setup, find_packages

setup(
    name="fixed_income_kernel",
    version="0.1.0",
    description="Deterministic fixed-point curve construction kernel",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "numpy",
        "pandas",
    ],
    extras_require={
        "test": [
            "pytest",
            "scipy",
        ],
    },
    python_requires=">=3.8",
)
