#!/usr/bin/env python
# -*- coding: utf-8 -*-
from setuptools import setup

# There are problems running setup.py on Windows if the encoding is not set
with open('README.md', encoding='utf8') as readme_file:
    readme = readme_file.read()
with open('eventrelay/VERSION', encoding='utf8') as version_file:
    version = version_file.read().strip()


setup(
    name='eventrelay',
    version=version,
    description="Client-side telemetry delivery: batching, deduplication and retrying event uploads.",
    long_description=readme,
    long_description_content_type="text/markdown",
    author="eventrelay maintainers",
    packages=[
        'eventrelay',
        'eventrelay.streaming',
    ],
    package_dir={'eventrelay': 'eventrelay'},
    package_data={'eventrelay': ['VERSION']},
    entry_points={
        'console_scripts': [
            'eventrelay=eventrelay.cli:cli'
        ]
    },
    include_package_data=True,
    install_requires=[
        'httpx>=0.24',
        'tenacity>=8.2',
        'pydantic>=2.0',
        'typer>=0.9',
        'rich',
    ],
    extras_require={
        'test': [
            'pytest',
            'pytest-asyncio>=0.21',
        ],
    },
    python_requires=">=3.9",
    license="MIT license",
    zip_safe=False,
    keywords='telemetry events analytics batching',
    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: MIT License',
        'Natural Language :: English',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
    ]
)
