import os
from sencrypt import __name__, __version__
from setuptools import setup, find_packages

BASE = os.path.dirname(__file__)
with open(os.path.join(BASE, 'README.md'), encoding='utf-8') as fh:
    long_description = fh.read()


setup(
    name=__name__,
    version=__version__,
    description="End-to-end encrypted transfers of large files through an untrusted chunk store",
    long_description=long_description,
    long_description_content_type="text/markdown",
    keywords="encryption rsa aes-gcm file transfer",
    license='MIT',
    python_requires='>=3.8',
    packages=find_packages(exclude=('tests', 'tests.*')),
    zip_safe=False,
    entry_points={
        'console_scripts': [
            'sencrypt=sencrypt.cli:main',
        ],
    },
    install_requires=[
        'aiohttp>=3.7.4',
        'appdirs>=1.4.3',
        'cryptography>=3.4',
        'pyyaml>=5.3.1',
    ],
    extras_require={
        'lint': [
            'pylint'
        ],
        'test': [
            'coverage',
        ],
    },
    classifiers=[
        'Framework :: AsyncIO',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3',
        'Operating System :: OS Independent',
        'Topic :: Security :: Cryptography',
        'Topic :: Utilities',
    ],
)
