"""memsync command line (``memsync serve``, ``memsync status``)."""
