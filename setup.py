import codecs

import setuptools


def long_description():
    with codecs.open("README.md", encoding="utf8") as f:
        return f.read()


setuptools.setup(
    name="staticroute",
    version="0.1.0",
    description="Serve static files routed by hostname and path",
    install_requires=[
        "twisted>=20.3.0",
    ],
    extras_require={
        "test": ["pytest"],
    },
    long_description=long_description(),
    long_description_content_type="text/markdown",
    packages=["staticroute", "staticroute.app"],
    entry_points={
        "console_scripts": [
            "staticroute=staticroute.__main__:main",
        ]
    },
    python_requires=">=3.7",
    keywords="http static server virtual host rewrite twisted",
    classifiers=[
        "Environment :: Web Environment",
        "Intended Audience :: Developers",
        "Operating System :: OS Independent",
        "Programming Language :: Python",
        "Programming Language :: Python :: 3",
        "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
        "Topic :: Software Development :: Libraries :: Python Modules",
    ],
)
