# -*- coding: utf-8 -*-
"""microbatch test suite."""
