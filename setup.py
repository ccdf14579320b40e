#!/usr/bin/env python3
import sys

from setuptools import setup

from saveknight import __version__ as VERSION

if sys.version_info < (3, 7):
    sys.exit('Python 3.7 is required to run SaveKnight')

setup(
    name='saveknight',
    version=VERSION,
    license='GPL-3',
    packages=[
        'saveknight',
        'saveknight.util',
    ],
    scripts=['bin/saveknight'],
    zip_safe=False,
    python_requires='>=3.7',
    install_requires=[
        'PyYAML',
        'requests',
        'keyring',
    ],
    extras_require={
        'test': [
            'pytest',
        ],
    },
    url='https://saveknight.com',
    description='Game save detection and backup client',
    long_description="""SaveKnight finds the save files of the games installed on your
    computer using the Ludusavi manifest of known save locations, and backs them up
    to your SaveKnight account.""",
    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: End Users/Desktop',
        'License :: OSI Approved :: GNU General Public License v3 or later (GPLv3+)',
        'Programming Language :: Python',
        'Operating System :: OS Independent',
        'Topic :: Games/Entertainment'
    ],
)
