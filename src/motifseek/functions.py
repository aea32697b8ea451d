import numpy as np
from numba import njit, prange

from motifseek.ragged import RaggedData


@njit(inline="always")
def _logsumexp(values):
    """Log-sum-exp of a 1D array, -inf for an empty or all -inf array."""
    m = -np.inf
    for v in values:
        if v > m:
            m = v
    if m == -np.inf:
        return -np.inf
    s = 0.0
    for v in values:
        s += np.exp(v - m)
    return m + np.log(s)


@njit(inline="always")
def _logsumexp_masked(values, mask):
    m = -np.inf
    for q in range(values.size):
        if mask[q] and values[q] > m:
            m = values[q]
    if m == -np.inf:
        return -np.inf
    s = 0.0
    for q in range(values.size):
        if mask[q]:
            s += np.exp(values[q] - m)
    return m + np.log(s)


@njit(inline="always")
def _symbol(data, start, width, offset, reverse, alphabet_size):
    """Symbol at ``offset`` of a window, read on the reverse complement strand if requested."""
    if reverse:
        sym = np.int64(data[start + width - 1 - offset])
        if sym < alphabet_size:
            return alphabet_size - 1 - sym
        return sym
    return np.int64(data[start + offset])


@njit(inline="always")
def _site_score(data, start, width, reverse, params, pos_offsets, orders, alphabet_size):
    """Unnormalized log-score of one motif window, -inf if the window holds an unknown symbol."""
    score = 0.0
    for j in range(width):
        ctx = 0
        for t in range(j - orders[j], j):
            sym = _symbol(data, start, width, t, reverse, alphabet_size)
            if sym >= alphabet_size:
                return -np.inf
            ctx = ctx * alphabet_size + sym
        sym = _symbol(data, start, width, j, reverse, alphabet_size)
        if sym >= alphabet_size:
            return -np.inf
        score += params[pos_offsets[j] + ctx * alphabet_size + sym]
    return score


@njit(inline="always")
def _add_site_gradient(data, start, width, reverse, weight, pos_offsets, orders, alphabet_size, grad):
    for j in range(width):
        ctx = 0
        for t in range(j - orders[j], j):
            sym = _symbol(data, start, width, t, reverse, alphabet_size)
            if sym >= alphabet_size:
                return
            ctx = ctx * alphabet_size + sym
        sym = _symbol(data, start, width, j, reverse, alphabet_size)
        if sym >= alphabet_size:
            return
        grad[pos_offsets[j] + ctx * alphabet_size + sym] += weight


@njit(cache=True)
def markov_site_score(codes, start, width, reverse, params, pos_offsets, orders, alphabet_size):
    """Score a single window of an encoded sequence."""
    return _site_score(codes, start, width, reverse, params, pos_offsets, orders, alphabet_size)


@njit(cache=True)
def markov_site_gradient(codes, start, width, reverse, params, pos_offsets, orders, alphabet_size):
    """Gradient of a single window score with respect to the motif parameters."""
    grad = np.zeros(params.size, dtype=np.float64)
    _add_site_gradient(codes, start, width, reverse, 1.0, pos_offsets, orders, alphabet_size, grad)
    return grad


@njit(nogil=True, cache=True)
def markov_window_scores(data, offsets, indices, width, params, pos_offsets, orders, alphabet_size):
    """Score every window of the selected sequences on both strands.

    For each selected sequence the output holds ``L - width + 1`` forward
    scores followed by the same number of reverse complement scores, where
    the reverse entry at ``p`` scores the window covering ``p..p+width-1``
    read on the opposite strand.
    """
    n = indices.size
    win_offsets = np.zeros(n + 1, dtype=np.int64)
    for k in range(n):
        i = indices[k]
        n_win = offsets[i + 1] - offsets[i] - width + 1
        if n_win < 0:
            n_win = 0
        win_offsets[k + 1] = win_offsets[k] + 2 * n_win

    out = np.empty(win_offsets[n], dtype=np.float64)
    for k in range(n):
        start = offsets[indices[k]]
        o = win_offsets[k]
        n_win = (win_offsets[k + 1] - o) // 2
        for p in range(n_win):
            out[o + p] = _site_score(data, start + p, width, False, params, pos_offsets, orders, alphabet_size)
            out[o + n_win + p] = _site_score(data, start + p, width, True, params, pos_offsets, orders, alphabet_size)
    return out, win_offsets


@njit(nogil=True, cache=True)
def strand_mixture(
    windows,
    win_offsets,
    indices,
    log_prior,
    prior_offsets,
    mixing,
    window_offset,
    threshold,
    kept,
    kept_valid,
    kept_offsets,
    mode,
):
    """Log-mass of the motif-present branch for the selected sequences.

    ``mode`` selects how positions enter the sum: 0 uses every position, 1 uses
    the cached kept positions where a sequence has them, 2 re-thresholds the
    posteriors, stores the kept positions and returns their renormalized
    posteriors (zero elsewhere).
    """
    n = indices.size
    present = np.empty(n, dtype=np.float64)
    post = np.zeros(windows.size, dtype=np.float64)

    for k in range(n):
        i = indices[k]
        o = win_offsets[k]
        n_win = (win_offsets[k + 1] - o) // 2
        if n_win == 0:
            present[k] = -np.inf
            continue

        po = prior_offsets[i]
        ko = kept_offsets[i]
        log_odds = np.empty(2 * n_win, dtype=np.float64)
        for p in range(n_win):
            prior = log_prior[po + p] + window_offset
            log_odds[p] = prior + windows[o + p]
            log_odds[n_win + p] = prior + windows[o + n_win + p]

        use_kept = mode == 1 and kept_valid[i]
        if mode == 2:
            total = _logsumexp(log_odds)
            if total == -np.inf:
                for q in range(2 * n_win):
                    kept[ko + q] = False
                kept_valid[i] = True
                present[k] = -np.inf
                continue
            normed = np.exp(log_odds - total)
            cut = 0.0
            if threshold < 1.0:
                ordered = np.sort(normed)[::-1]
                s = 0.0
                e = 0
                while e < ordered.size - 1:
                    s += ordered[e]
                    if s >= threshold:
                        break
                    e += 1
                cut = ordered[e]
            for q in range(2 * n_win):
                kept[ko + q] = normed[q] >= cut
            kept_valid[i] = True
            use_kept = True

        if use_kept:
            acc = _logsumexp_masked(log_odds, kept[ko : ko + 2 * n_win])
        else:
            acc = _logsumexp(log_odds)
        present[k] = mixing + acc

        if mode == 2 and acc > -np.inf:
            for q in range(2 * n_win):
                if kept[ko + q]:
                    post[o + q] = np.exp(log_odds[q] - acc)

    return present, post


@njit(nogil=True, cache=True)
def accumulate_markov_gradient(
    data, offsets, indices, post, win_offsets, coef, width, pos_offsets, orders, alphabet_size, grad
):
    """Add ``coef[k] * posterior`` to the parameters used by every kept window."""
    for k in range(indices.size):
        c = coef[k]
        if c == 0.0:
            continue
        start = offsets[indices[k]]
        o = win_offsets[k]
        n_win = (win_offsets[k + 1] - o) // 2
        for p in range(n_win):
            w = post[o + p]
            if w > 0.0:
                _add_site_gradient(data, start + p, width, False, c * w, pos_offsets, orders, alphabet_size, grad)
            w = post[o + n_win + p]
            if w > 0.0:
                _add_site_gradient(data, start + p, width, True, c * w, pos_offsets, orders, alphabet_size, grad)


@njit(inline="always")
def _window_is_known(data, start, width, reverse, alphabet_size):
    for j in range(width):
        if _symbol(data, start, width, j, reverse, alphabet_size) >= alphabet_size:
            return False
    return True


@njit(inline="always")
def _window_context(data, start, width, reverse, first, last, alphabet_size):
    ctx = 0
    for t in range(first, last):
        ctx = ctx * alphabet_size + _symbol(data, start, width, t, reverse, alphabet_size)
    return ctx


@njit(inline="always")
def _slim_component(data, start, width, reverse, logp, layout, j, c, x, alphabet_size):
    """Log-probability of symbol ``x`` at position ``j`` under component ``c``."""
    _, _, n_anc, anc_offsets, dep_offsets = layout
    if c == 0:
        return logp[dep_offsets[j, 0] + x]
    acc = -np.inf
    for m in range(n_anc[j, c]):
        ctx = _window_context(data, start, width, reverse, j - m - c, j - m, alphabet_size)
        acc = np.logaddexp(acc, logp[anc_offsets[j, c] + m] + logp[dep_offsets[j, c] + ctx * alphabet_size + x])
    return acc


@njit(inline="always")
def _slim_site_score(data, start, width, reverse, logp, layout, alphabet_size):
    """Log-probability of one window; ``layout`` is ``(n_comp, comp_offsets, n_anc, anc_offsets, dep_offsets)``."""
    n_comp, comp_offsets = layout[0], layout[1]
    if not _window_is_known(data, start, width, reverse, alphabet_size):
        return -np.inf
    score = 0.0
    for j in range(width):
        x = _symbol(data, start, width, j, reverse, alphabet_size)
        acc = -np.inf
        for c in range(n_comp[j]):
            term = _slim_component(data, start, width, reverse, logp, layout, j, c, x, alphabet_size)
            acc = np.logaddexp(acc, logp[comp_offsets[j] + c] + term)
        score += acc
    return score


@njit(inline="always")
def _add_slim_gradient(data, start, width, reverse, weight, logp, layout, alphabet_size, terms, grad):
    n_comp, comp_offsets, n_anc, anc_offsets, dep_offsets = layout
    if not _window_is_known(data, start, width, reverse, alphabet_size):
        return
    for j in range(width):
        x = _symbol(data, start, width, j, reverse, alphabet_size)
        total = -np.inf
        for c in range(n_comp[j]):
            terms[c] = logp[comp_offsets[j] + c] + _slim_component(
                data, start, width, reverse, logp, layout, j, c, x, alphabet_size
            )
            total = np.logaddexp(total, terms[c])
        for c in range(n_comp[j]):
            resp = np.exp(terms[c] - total)
            grad[comp_offsets[j] + c] += weight * (resp - np.exp(logp[comp_offsets[j] + c]))
            if resp == 0.0:
                continue
            wr = weight * resp
            if c == 0:
                base = dep_offsets[j, 0]
                for y in range(alphabet_size):
                    hit = 1.0 if y == x else 0.0
                    grad[base + y] += wr * (hit - np.exp(logp[base + y]))
                continue
            inner = terms[c] - logp[comp_offsets[j] + c]
            for m in range(n_anc[j, c]):
                ctx = _window_context(data, start, width, reverse, j - m - c, j - m, alphabet_size)
                base = dep_offsets[j, c] + ctx * alphabet_size
                a_idx = anc_offsets[j, c] + m
                share = np.exp(logp[a_idx] + logp[base + x] - inner)
                grad[a_idx] += wr * (share - np.exp(logp[a_idx]))
                for y in range(alphabet_size):
                    hit = 1.0 if y == x else 0.0
                    grad[base + y] += wr * share * (hit - np.exp(logp[base + y]))


@njit(cache=True)
def slim_site_score(codes, start, width, reverse, logp, layout, alphabet_size):
    """Score a single window under a sparse local mixture model."""
    return _slim_site_score(codes, start, width, reverse, logp, layout, alphabet_size)


@njit(cache=True)
def slim_site_gradient(codes, start, width, reverse, logp, layout, alphabet_size):
    grad = np.zeros(logp.size, dtype=np.float64)
    terms = np.empty(layout[0].max(), dtype=np.float64)
    _add_slim_gradient(codes, start, width, reverse, 1.0, logp, layout, alphabet_size, terms, grad)
    return grad


@njit(nogil=True, cache=True)
def slim_window_scores(data, offsets, indices, width, logp, layout, alphabet_size):
    """Both-strand window scores laid out like ``markov_window_scores``."""
    n = indices.size
    win_offsets = np.zeros(n + 1, dtype=np.int64)
    for k in range(n):
        i = indices[k]
        n_win = offsets[i + 1] - offsets[i] - width + 1
        if n_win < 0:
            n_win = 0
        win_offsets[k + 1] = win_offsets[k] + 2 * n_win

    out = np.empty(win_offsets[n], dtype=np.float64)
    for k in range(n):
        start = offsets[indices[k]]
        o = win_offsets[k]
        n_win = (win_offsets[k + 1] - o) // 2
        for p in range(n_win):
            out[o + p] = _slim_site_score(data, start + p, width, False, logp, layout, alphabet_size)
            out[o + n_win + p] = _slim_site_score(data, start + p, width, True, logp, layout, alphabet_size)
    return out, win_offsets


@njit(nogil=True, cache=True)
def accumulate_slim_gradient(data, offsets, indices, post, win_offsets, coef, width, logp, layout, alphabet_size, grad):
    """Sparse local mixture counterpart of ``accumulate_markov_gradient``."""
    terms = np.empty(layout[0].max(), dtype=np.float64)
    for k in range(indices.size):
        c = coef[k]
        if c == 0.0:
            continue
        start = offsets[indices[k]]
        o = win_offsets[k]
        n_win = (win_offsets[k + 1] - o) // 2
        for p in range(n_win):
            w = post[o + p]
            if w > 0.0:
                _add_slim_gradient(data, start + p, width, False, c * w, logp, layout, alphabet_size, terms, grad)
            w = post[o + n_win + p]
            if w > 0.0:
                _add_slim_gradient(data, start + p, width, True, c * w, logp, layout, alphabet_size, terms, grad)


@njit(inline="always")
def _homogeneous_index(data, start, j, order, ctx_offsets, alphabet_size):
    c = min(j, order)
    ctx = 0
    for t in range(j - c, j):
        sym = data[start + t]
        if sym >= alphabet_size:
            return -1
        ctx = ctx * alphabet_size + sym
    sym = data[start + j]
    if sym >= alphabet_size:
        return -1
    return ctx_offsets[c] + ctx * alphabet_size + sym


@njit(nogil=True, cache=True)
def homogeneous_scores(data, offsets, indices, log_probs, ctx_offsets, order, alphabet_size):
    """Log-probability of whole sequences under a homogeneous Markov model; unknown symbols are skipped."""
    out = np.zeros(indices.size, dtype=np.float64)
    for k in range(indices.size):
        i = indices[k]
        start = offsets[i]
        s = 0.0
        for j in range(offsets[i + 1] - start):
            idx = _homogeneous_index(data, start, j, order, ctx_offsets, alphabet_size)
            if idx >= 0:
                s += log_probs[idx]
        out[k] = s
    return out


@njit(nogil=True, cache=True)
def homogeneous_counts(data, offsets, indices, coef, ctx_offsets, order, alphabet_size, counts):
    """Accumulate ``coef``-weighted transition counts of the selected sequences."""
    for k in range(indices.size):
        c = coef[k]
        if c == 0.0:
            continue
        i = indices[k]
        start = offsets[i]
        for j in range(offsets[i + 1] - start):
            idx = _homogeneous_index(data, start, j, order, ctx_offsets, alphabet_size)
            if idx >= 0:
                counts[idx] += c


@njit(parallel=True, cache=True)
def _max_shift_correlation_kernel(data1, offsets1, data2, offsets2, max_shift):
    """Mean per-sequence Pearson correlation for every shift, maximized over shifts."""
    n_seq = len(offsets1) - 1
    search_range = max_shift - 1
    n_offsets = 2 * search_range + 1
    means = np.zeros(n_offsets, dtype=np.float64)

    for k in prange(n_offsets):
        offset = k - search_range
        idx1_start = 0 if offset < 0 else offset
        idx2_start = -offset if offset < 0 else 0
        total = 0.0
        count = 0

        for i in range(n_seq):
            vlen1 = offsets1[i + 1] - offsets1[i]
            vlen2 = offsets2[i + 1] - offsets2[i]
            if idx1_start >= vlen1 or idx2_start >= vlen2:
                continue
            overlap = min(vlen1 - idx1_start, vlen2 - idx2_start)

            n = 0
            sum_x = 0.0
            sum_y = 0.0
            sum_xx = 0.0
            sum_yy = 0.0
            sum_xy = 0.0
            for j in range(overlap):
                x = data1[offsets1[i] + idx1_start + j]
                y = data2[offsets2[i] + idx2_start + j]
                if not (np.isfinite(x) and np.isfinite(y)):
                    continue
                n += 1
                sum_x += x
                sum_y += y
                sum_xx += x * x
                sum_yy += y * y
                sum_xy += x * y

            if n > 1:
                mean_x = sum_x / n
                mean_y = sum_y / n
                var_x = sum_xx / n - mean_x * mean_x
                var_y = sum_yy / n - mean_y * mean_y
                if var_x > 1e-12 and var_y > 1e-12:
                    cov = sum_xy / n - mean_x * mean_y
                    total += cov / np.sqrt(var_x * var_y)
                    count += 1

        if count > 0:
            means[k] = total / count

    best = means[0]
    best_offset = -search_range
    for k in range(1, n_offsets):
        if means[k] > best:
            best = means[k]
            best_offset = k - search_range
    return best, best_offset


def max_shift_correlation(profile1: RaggedData, profile2: RaggedData, max_shift: int):
    """Maximal mean Pearson correlation of two profile sets over shifts ``-(max_shift-1)..max_shift-1``.

    Returns the correlation and the shift at which it is reached. Sequences with
    constant or missing profiles are left out of the mean.
    """
    if profile1.num_sequences != profile2.num_sequences:
        raise ValueError("profiles must cover the same sequences")
    return _max_shift_correlation_kernel(
        profile1.data, profile1.offsets, profile2.data, profile2.offsets, max(int(max_shift), 1)
    )


@njit(cache=True)
def max_pairwise_mutual_information(sites, weights, max_distance, alphabet_size):
    """Pairwise mutual information (bits) between columns of aligned sites.

    Sites must be sorted by decreasing score. For every column pair within
    ``max_distance`` the counts are accumulated site by site and the MI of the
    prefix with the largest weighted statistic ``sum * MI`` is reported.
    """
    n, length = sites.shape
    result = np.zeros((length, length), dtype=np.float64)
    if max_distance <= 0 or n == 0:
        return result

    counts = np.zeros((length, length, alphabet_size, alphabet_size), dtype=np.float64)
    totals = np.zeros((length, length), dtype=np.float64)
    best = np.full((length, length), -np.inf)

    for s in range(n):
        w = weights[s]
        for j in range(length):
            x = sites[s, j]
            if x >= alphabet_size:
                continue
            for k in range(j + 1, min(length, j + max_distance + 1)):
                y = sites[s, k]
                if y >= alphabet_size:
                    continue
                counts[j, k, x, y] += w
                totals[j, k] += w

        for j in range(length):
            for k in range(j + 1, min(length, j + max_distance + 1)):
                total = totals[j, k]
                if total <= 0:
                    continue
                stat = 0.0
                for a in range(alphabet_size):
                    row = 0.0
                    for b in range(alphabet_size):
                        row += counts[j, k, a, b]
                    for b in range(alphabet_size):
                        c = counts[j, k, a, b]
                        if c <= 0:
                            continue
                        col = 0.0
                        for a2 in range(alphabet_size):
                            col += counts[j, k, a2, b]
                        stat += c * np.log2(total * c / (row * col))
                if stat > best[j, k]:
                    best[j, k] = stat
                    result[j, k] = stat / total
                    result[k, j] = stat / total
    return result
