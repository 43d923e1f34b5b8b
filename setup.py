"""Generic setup script."""

from setuptools import setup

def main():
    """Setup entry point."""
    description = ''
    try:
        with open('README.md', 'r') as f:
            description = f.read()
    except FileNotFoundError:
        pass

    setup(
        name='packrat',
        version='0.0.1',
        description='A Packrat Parsing Expression Grammar Matcher with Left Recursion',
        long_description=description,
        license='MIT',
        packages=['packrat'],
        python_requires='>=3.6',
        install_requires=[],
        extras_require={
            'test': ['pytest'],
        },
        entry_points={},
    )

if __name__ == '__main__':
    main()
