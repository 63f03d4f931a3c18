from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

install_requires = ['numpy', 'scipy', 'joblib']

setup(
    name='ilamm',
    version="1.0",
    packages=find_packages(exclude=['tests']),
    author="Xiaoou Pan, Qiang Sun, Wenxin Zhou",
    description="Nonconvex Regularized Robust Regression via I-LAMM",
    long_description=long_description,
    long_description_content_type="text/markdown",
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    install_requires=install_requires,
    extras_require={'test': ['pytest']},
)
