#!/usr/bin/env python
from setuptools import setup
setup(
    name='multihttp',
    version='1.2',
    description='Parallel HTTP Requests with Callbacks and Retries',
    author='Six Apart',
    author_email='python@sixapart.com',

    packages=['multihttp'],
    provides=['multihttp'],
    python_requires='>=3.9',
    install_requires=['httplib2>=0.19', 'pycurl>=7.45'],
    extras_require={
        'test': ['pytest'],
    },
)
