#encoding="utf-8"
import setuptools

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setuptools.setup(
    name="PyDBCParser",
    version="0.1.0",
    description="Parse CAN database (DBC) files and decode/encode signals",
    long_description=long_description,
    long_description_content_type="text/markdown",
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
    ],
    install_requires=[

      ],
    extras_require={
        "test": ["pytest"],
    },
    package_dir={"dbcparser": "src"},
    packages=[
        'dbcparser'
        ],

    python_requires='>=3.9',
)
