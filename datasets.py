''' Utility functions to prepare bag-of-words documents

Bag-of-words features come as tuples (doc-id, (word-id, count)), in any
order and possibly with repeated (doc-id, word-id) pairs.
'''
import logging
import numpy as np
import scipy.sparse as spsp

logger = logging.getLogger(__name__)


def bow_features_to_csr(features, max_features):
    ''' Convert bag-of-words tuples to word count vectors

    PARAMETERS
    -----------
    features : iterable of (doc-id, (word-id, count))
        Bag-of-words tuples. Counts of repeated (doc-id, word-id)
        pairs are summed.
    max_features : int
        Vocabulary size, every word-id must be in [0, max_features).

    RETURNS
    -----------
    doc_ids : 1d array
        Document ids in ascending order, the i-th one labelling the
        i-th row.
    docs : n_docs-by-max_features csr_matrix
        Word count vectors.
    '''
    features = list(features)
    assert max_features >= 1

    doc_keys = np.array([doc_id for doc_id, _ in features])
    word_ids = np.array([word_id for _, (word_id, _) in features],
                        dtype=int)
    counts = np.array([count for _, (_, count) in features],
                      dtype=np.float64)
    if np.any((word_ids < 0) | (word_ids >= max_features)):
        raise ValueError('word ids must be in [0, {})'.format(max_features))

    doc_ids, rows = np.unique(doc_keys, return_inverse=True)
    docs = spsp.coo_matrix((counts, (rows.ravel(), word_ids)),
                           shape=(len(doc_ids), max_features)).tocsr()
    docs.sum_duplicates()
    return doc_ids, docs

def filter_documents_with_word_ids(features, word_ids):
    ''' Pick documents with any of the specified word ids

    PARAMETERS
    -----------
    features : iterable of (doc-id, (word-id, count))
        Bag-of-words tuples.
    word_ids : int or iterable of int
        Retain documents with any of these word ids.

    RETURNS
    -----------
    out : list of (doc-id, (word-id, count))
        All the tuples of the retained documents.
    '''
    features = list(features)
    if np.isscalar(word_ids):
        word_ids = [word_ids]
    word_ids = set(word_ids)

    retained = {doc_id for doc_id, (word_id, _) in features
                if word_id in word_ids}
    return [feature for feature in features if feature[0] in retained]

def bow_statistics(features, probabilities=(0.1, 0.5, 0.9)):
    ''' Document statistics of bag-of-words

    PARAMETERS
    -----------
    features : iterable of (doc-id, (word-id, count))
        Bag-of-words tuples.
    probabilities : sequence of float, optional
        Quantile levels for the statistics.

    RETURNS
    -----------
    out : dict
        `n_docs`, and the quantiles of the number of distinct tokens
        per document (`distinct_tokens`) and of document length
        (`doc_length`).
    '''
    words = {}
    doc_length = {}
    for doc_id, (word_id, count) in features:
        words.setdefault(doc_id, set()).add(word_id)
        doc_length[doc_id] = doc_length.get(doc_id, 0) + count

    if not doc_length:
        raise ValueError('no documents in the features')

    stats = {
        'n_docs': len(doc_length),
        'distinct_tokens': np.quantile([len(ids) for ids in words.values()],
                                       probabilities),
        'doc_length': np.quantile(list(doc_length.values()), probabilities),
    }
    logger.info('# documents: %d', stats['n_docs'])
    logger.info('quantiles of distinct tokens by document: %s',
                stats['distinct_tokens'])
    logger.info('quantiles of document length: %s', stats['doc_length'])
    return stats
