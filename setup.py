# fmt: off

from setuptools import (
    setup,
    find_namespace_packages,
)

with open('README.md','r') as f:
    README = f.read()

setup(
    name='timelapse-architect',
    version='0.1.0',
    description='Renovation timelapse generator: 8 chained Gemini image edits with a Gradio editor',
    long_description=README,
    long_description_content_type="text/markdown",
    install_requires=[
        'Pillow',
        'google-genai>=1.33.0',
        'httpx',
        'pydantic>=2',
        'python-dotenv',
        'param>=2',
        'tqdm',
    ],
    extras_require={
        'dev': [
            'pytest',
        ],
        'ui': [
            'gradio>=4',
        ]
    },
    packages=find_namespace_packages(
        where='src',
        include=['timelapse_architect*'],
    ),
    package_dir = {"": "src"},
    entry_points={
        'console_scripts': [
            'timelapse_architect=timelapse_architect.__main__:main',
        ],
    },
    classifiers=[
        'Intended Audience :: End Users/Desktop',
        'Topic :: Artistic Software',
        'Topic :: Multimedia :: Graphics',
        'Topic :: Multimedia :: Video',
        'Topic :: Scientific/Engineering :: Artificial Intelligence',
    ],
    keywords=[],
    license='MIT',
)
