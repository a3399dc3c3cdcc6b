"""Shared configuration and schemas"""
