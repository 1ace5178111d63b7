"""
python -m build
twine upload dist/*
"""

from setuptools import setup, find_packages


def stacore_setup():
    with open("requirements.txt", "rt") as fp:
        install_requires = fp.read().strip().split("\n")

    version = "0.3.0"

    setup(
        name="stacore",
        packages=find_packages(exclude=["tests", "tests.*"]),
        version=version,
        license="MIT",
        description="stacore : SensorThings API query translation and request resolution on SQLAlchemy",
        long_description=open("README.rst").read(),
        keywords=["SqlAlchemy", "Flask", "REST", "SensorThings", "OGC", "GeoJSON"],
        python_requires=">=3.8, <4",
        install_requires=install_requires,
        classifiers=[
            "Development Status :: 3 - Alpha",
            "Intended Audience :: Developers",
            "Framework :: Flask",
            "Topic :: Software Development :: Libraries",
            "Environment :: Web Environment",
            "Programming Language :: Python :: 3.12",
            "Programming Language :: Python :: 3.11",
            "Programming Language :: Python :: 3.10",
            "Programming Language :: Python :: 3.9",
            "Programming Language :: Python :: 3.8",
        ],
        extras_require={"test": ["pytest>=7.0"]},
    )


stacore_setup()  # pragma: no cover
