"""
virtual_keywords: Overridable Control-Flow Keywords for Python Classes

Rewrites the methods of chosen classes or objects so that:
1. ``if`` statements, conditional expressions and comprehension filters
2. ``and`` / ``or`` short-circuit operators
3. ``while`` loops
call a user-supplied behavior with thunked operands instead of running the
built-in semantics.
"""

from setuptools import setup, find_packages

setup(
    name="virtual_keywords",
    version="0.3.0",
    description="Overridable if/and/or/while for Python classes via method tree rewriting",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    author="virtual_keywords contributors",
    python_requires=">=3.10",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[],
    extras_require={
        "dev": [
            "pytest>=7.0",
        ]
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Software Development :: Code Generators",
        "Topic :: Software Development :: Libraries :: Python Modules",
    ],
)
