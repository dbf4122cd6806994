"""Storage of images, metadata and the image index in a GitHub repository."""
