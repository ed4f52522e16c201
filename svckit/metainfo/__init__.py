"""Namespace for request metadata helpers; it holds no modules yet."""