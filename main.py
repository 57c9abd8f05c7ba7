#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""Main entry point for queue_worker."""

from queue_worker.cli import main

if __name__ == '__main__':
    main()
