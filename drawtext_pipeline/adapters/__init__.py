"""Adapters from upstream collaborator files to the pipeline's Word stream.

transcript — transcription JSON -> ordered Word list
keywords   — keyword lists and tag records -> keyword predicates
"""
