from setuptools import setup, find_packages

# The information here can also be placed in setup.cfg - better separation of
# logic and declaration, and simpler if you include description/version in a file.
setup(
    name="mipbridge",
    version="0.3.0",
    author="mipbridge developers",
    description="Search-time callbacks for MIP solvers, on top of HiGHS",
    long_description="",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    zip_safe=False,
    extras_require={"test": ["pytest>=6.0"]},
    python_requires=">=3.9",
    install_requires=[
        'numpy',
        'highspy>=1.8',
    ],
)
