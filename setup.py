#!/usr/bin/python3
# Setup file for gitodb
# Copyright (C) 2008-2022 Jelmer Vernooĳ <jelmer@jelmer.uk>
# SPDX-License-Identifier: Apache-2.0 OR GPL-2.0-or-later

from setuptools import setup

setup(
    package_data={"": ["py.typed"]},
)
