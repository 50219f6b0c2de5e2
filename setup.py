#!/usr/bin/env python3
"""
Setup script for SightMate distribution.
"""

from setuptools import setup, find_packages

# Read README for long description
def read_file(filename):
    with open(filename, 'r', encoding='utf-8') as f:
        return f.read()

# Read requirements
def read_requirements():
    with open('requirements.txt', 'r') as f:
        return [line.strip() for line in f if line.strip() and not line.startswith('#')]

setup(
    name='sightmate',
    version='0.4.0',
    description='Voice-driven walking companion and emergency assistant for blind and visually impaired users',
    long_description=read_file('README.md'),
    long_description_content_type='text/markdown',
    author='SightMate Contributors',
    author_email='',
    package_dir={'': 'src'},
    packages=find_packages(where='src'),
    include_package_data=True,
    data_files=[('config', ['config/config.yaml'])],
    install_requires=read_requirements(),
    extras_require={
        'test': ['pytest>=7.4'],
    },
    python_requires='>=3.10',
    entry_points={
        'console_scripts': [
            'sightmate=sightmate.main:main',
        ],
    },
    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: End Users/Desktop',
        'Intended Audience :: Healthcare Industry',
        'License :: OSI Approved :: GNU General Public License v3 or later (GPLv3+)',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Topic :: Scientific/Engineering :: Artificial Intelligence',
    ],
    keywords='accessibility navigation blind assistive-technology voice emergency',
    license='GPL-3.0-or-later',
)
