

from setuptools import setup, find_packages

with open('README.rst', encoding='utf-8') as readme_file:
    readme = readme_file.read()

with open('HISTORY.rst', encoding='utf-8') as history_file:
    history = history_file.read()

with open('requirements.txt', encoding='utf-8') as requirements_file:
    all_pkgs = requirements_file.readlines()

requirements = [pkg.strip() for pkg in all_pkgs if pkg.strip() and "#" not in pkg]
test_requirements = ['pytest>=7']

setup(
    name='taxbot-automation',
    author='TaxBot Vietnam',
    author_email='admin@taxbot.vn',
    description='Automation engine for TaxBot Vietnam: a prioritised task queue with retry and backoff, and a tax calendar that turns filing and payment deadlines into reminders, declarations, payments and status checks against the eTax gateway.',
    python_requires='>=3.10',
    classifiers=[
        'Development Status :: 2 - Pre-Alpha',
        'Intended Audience :: Developers',
        'Natural Language :: English',
        'Programming Language :: Python :: 3.10',
    ],
    entry_points={
        'console_scripts': [
            'taxbot-automation=taxbot.automation.cli:main',
        ],
    },
    install_requires=requirements,
    extras_require={'test': test_requirements},
    long_description=readme + '\n\n' + history,
    include_package_data=True,
    package_data={'taxbot': ['conf/*.yaml']},
    keywords='taxbot',
    packages=find_packages(include=['taxbot', 'taxbot.*']),
    test_suite='taxbot.automation.tests',
    tests_require=test_requirements,
    version='0.1.0',
    zip_safe=False,
    dependency_links=[]
)
