from setuptools import setup, find_packages

setup(
    name='robot-panel',
    version='1.0.0',
    packages=find_packages(exclude=['tests', 'tests.*']),
    python_requires='>=3.8',
    install_requires=[
        'fastapi>=0.104.0',
        'uvicorn>=0.24.0',
        'websockets>=12.0',
        'pydantic',
    ],
    extras_require={
        'test': [
            'pytest',
            'httpx',
        ],
    },
    zip_safe=True,
    description='PIN-gated control panel for a 6-axis arm over rosbridge',
    license='MIT',
    entry_points={
        'console_scripts': [
            'robot-panel = robot_panel.main:main',
        ],
    },
)
