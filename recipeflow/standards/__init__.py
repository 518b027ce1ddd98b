"""Company standards: reusable brand, platform and image guidance injected into prompts."""
