from typing import List
from sentence_transformers import SentenceTransformer
from squirrel.core.interfaces.ports import IEmbeddingProvider

class LocalEmbeddingProvider(IEmbeddingProvider):
    """On-device sentence embeddings. Blocking; callers run it off the event loop."""

    def __init__(self, model_name: str = "sentence-transformers/all-MiniLM-L6-v2"):
        self.model_name = model_name
        self.model = SentenceTransformer(model_name)

    def embed(self, text: str) -> List[float]:
        # Returns a numpy array, convert to list
        embedding = self.model.encode(text, normalize_embeddings=True)
        return [float(v) for v in embedding]

    def get_dimension(self) -> int:
        return self.model.get_sentence_embedding_dimension()
